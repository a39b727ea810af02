# Template fissi serviti quando il catalogo non ha (ancora) nulla da consegnare.

# Script minimo restituito a un device attivo se nessuna versione è attiva
PLACEHOLDER_SCRIPT = """// ScriptGate placeholder v{{VERSION}}
// Generated for {{USERNAME}} at {{TIMESTAMP}}
(function() {
    'use strict';
    console.log('[ScriptGate] No active script version is published yet. Please retry later.');
})();
"""

# Loader generico personalizzato (userscript): chiede lo script al server
LOADER_TEMPLATE = """// ==UserScript==
// @name         ScriptGate Loader - {{USERNAME}}
// @version      {{VERSION}}
// @description  Secure loader with device validation
// @grant        GM_setValue
// @grant        GM_getValue
// @grant        GM_xmlhttpRequest
// @run-at       document-start
// ==/UserScript==

(function() {
    'use strict';

    const CONFIG = {
        USERNAME: '{{USERNAME}}',
        API_BASE: '{{API_BASE}}',
        VERSION: '{{VERSION}}',
        GENERATED_AT: '{{TIMESTAMP}}'
    };

    function log(message) {
        console.log(`[ScriptGate Loader] ${message}`);
    }

    function fingerprint() {
        let fp = GM_getValue('scriptgate_fp');
        if (!fp) {
            const parts = [navigator.userAgent, navigator.language, screen.width, screen.height,
                           new Date().getTimezoneOffset(), navigator.hardwareConcurrency || 0];
            fp = btoa(parts.join('|')) + '-' + Math.random().toString(36).slice(2);
            GM_setValue('scriptgate_fp', fp);
        }
        return fp;
    }

    function secret() {
        let value = GM_getValue('scriptgate_secret');
        if (!value) {
            value = prompt('ScriptGate site secret:');
            if (value) GM_setValue('scriptgate_secret', value);
        }
        return value;
    }

    GM_xmlhttpRequest({
        method: 'POST',
        url: `${CONFIG.API_BASE}/api/delivery`,
        headers: { 'Content-Type': 'application/json' },
        data: JSON.stringify({ username: CONFIG.USERNAME, fingerprint: fingerprint(), secret: secret() }),
        onload: function(response) {
            const type = (response.responseHeaders || '').toLowerCase();
            if (response.status === 200 && type.includes('application/javascript')) {
                log('Script received, starting');
                new Function(response.responseText)();
                return;
            }
            try {
                const body = JSON.parse(response.responseText);
                log(body.message || 'Access not granted');
            } catch (e) {
                log('Unexpected response: ' + response.status);
            }
        },
        onerror: function() { log('Network error'); }
    });
})();
"""
