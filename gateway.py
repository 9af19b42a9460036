import atexit
import logging

from broadcastgw import create_app

app = create_app()
logging.basicConfig(
    level=app.config["LOG_LEVEL"],
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
atexit.register(app.extensions["broadcastgw"].connection.shutdown)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=app.config["PORT"], debug=False)
