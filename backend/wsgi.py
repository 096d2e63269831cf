from stallstock import create_app

app = create_app()
