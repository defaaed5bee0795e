from app.pantbrev import create_app

app = create_app()
