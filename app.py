"""
NADA Application Entry Point
Natural Acoustic Diagnostics & Alerts for paddy field water quality
"""
from nada import create_app

# Create Flask application instance
app = create_app()

if __name__ == '__main__':
    # Run development server
    app.run(
        host='0.0.0.0',
        port=5050,
        debug=True
    )
