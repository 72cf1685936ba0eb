from mqtt_exec.cli import app

app(prog_name="mqtt-exec")
