"""Entry point for running the YogaSwiss backend with uvicorn."""

from yogaswiss.main import app


def main():
    """Run the API server."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
