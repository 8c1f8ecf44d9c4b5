from app.tracker import create_app

app = create_app()
