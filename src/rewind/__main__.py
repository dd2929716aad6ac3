from rewind.cli import app

app()
