"""
Entry point for python -m router2mqtt
"""
if __name__ == "__main__":
    from .app import main
    main()
