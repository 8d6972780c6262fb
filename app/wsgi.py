from app.medinv import create_app

app = create_app()
