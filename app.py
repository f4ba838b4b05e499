"""Gunicorn entry point: ``gunicorn app:app``."""

from pdf_tools import create_app

app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8000)
