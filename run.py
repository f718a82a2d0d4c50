"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py --debug run

First-time setup:

    flask --app run.py db upgrade        (or: flask --app run.py init-db)
    flask --app run.py seed-masters
    flask --app run.py create-user admin admin@example.com --role admin

"""

from courier_billing import create_app

# WSGI application object. `flask run` looks for this `app` variable.
app = create_app()

if __name__ == "__main__":
    # For direct `python run.py` usage (dev only).
    app.run(debug=True)
