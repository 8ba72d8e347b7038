import logging

from app import build_engine, make_app
from config import Config

# Entrypoint
if __name__ == "__main__":
    logging.basicConfig(level=Config.logging.LEVEL, format=Config.logging.FORMAT)
    eng = build_engine()
    app = make_app(eng)
    # Run Flask
    app.run(host=Config.server.HOST, port=Config.server.PORT, debug=False)
