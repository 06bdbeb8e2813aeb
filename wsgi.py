"""
WSGI entry point for the NADA API server
"""
from nada import create_app

# Create the Flask application
app = create_app()

if __name__ == "__main__":
    app.run()
