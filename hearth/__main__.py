from hearth.main import app

app(prog_name="hearth")
