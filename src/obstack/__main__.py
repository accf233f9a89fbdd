from obstack.cli.app import app

app(prog_name="obstack")
