# scripts/seed_demo.py
import os, sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from scriptgate.core.config import get_settings
from scriptgate.crud import script_crud
from scriptgate.db.session import build_session_factory

DEMO_NAME = "demo-tool.user.js"
DEMO_SCRIPT = """// ==UserScript==
// @name         Demo Tool
// @version      1.0.0
// ==/UserScript==
(function() {
    'use strict';
    console.log('Demo Tool v{{VERSION}} for {{USERNAME}} ({{TIMESTAMP}})');
})();
"""


def main():
    settings = get_settings()  # carica .env dalla root
    SessionLocal = build_session_factory(settings.DATABASE_URL, settings.DB_CONNECT_TIMEOUT_SECONDS)

    db = SessionLocal()
    try:
        active = script_crud.active_version(db)
        if active is not None:
            print(f"Seed saltato: versione attiva già presente ({active.name} {active.version}).")
            return
        script = script_crud.publish(db, DEMO_NAME, DEMO_SCRIPT, "Demo seed", "system:seed")
        print(f"Seed completato. Script attivo: {script.name} {script.version} ({script.checksum[:12]}…)")
    finally:
        db.close()

if __name__ == "__main__":
    main()
