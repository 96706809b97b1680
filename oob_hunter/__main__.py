from .cli import app

app(prog_name="oob-hunter")
