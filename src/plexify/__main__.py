from plexify.main import plexify

if __name__ == "__main__":  # pragma: no cover
    plexify()
