"""
Module entry point for: python -m pyq_ingest

Allows running the pipeline directly as a module:
    python -m pyq_ingest ingest <url> --exam UPSC [options]
    python -m pyq_ingest crawl <root_url> --exam TNPSC [options]
    python -m pyq_ingest search "federalism" [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
