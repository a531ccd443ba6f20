"""
The Bihari Makhana storefront.

    flask --app app run
    flask --app app init-db
    flask --app app seed
    flask --app app process-notifications
"""

from storefront import __version__
from storefront.app import create_app

app = create_app()

if __name__ == '__main__':
    print("=" * 50)
    print(f"{app.config['STORE_NAME']} storefront v{__version__}")
    print("=" * 50)
    print(f"Database: {app.config['DATABASE_URL']}")
    print("Starting server on http://localhost:5001")
    print("=" * 50)
    app.run(host='0.0.0.0', port=5001, debug=False)
