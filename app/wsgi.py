from app.hcard import create_app

app = create_app()
