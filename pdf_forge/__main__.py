import uvicorn

from pdf_forge.core.config import settings


def main():
    uvicorn.run(
        "pdf_forge.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )


if __name__ == "__main__":
    main()
