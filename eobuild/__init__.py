"""eobuild - construtor de pacotes eopkg em sandbox efêmero."""

__version__ = "0.3.0"
