from mqtt_actor.cli.app import app

app()
