import logging
from app import build_engine, make_app
from config import DEFAULT_CONFIG
from engine import Logging
# Entrypoint
if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG if DEFAULT_CONFIG.logging_level >= Logging.VERBOSE else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    eng = build_engine(DEFAULT_CONFIG)
    app = make_app(eng, DEFAULT_CONFIG)
    # Run Flask
    app.run(host=DEFAULT_CONFIG.host, port=DEFAULT_CONFIG.port, debug=False)
