"""Command line interface for checking configuration loading"""
from pathlib import Path

from . import settings_conf, DEFAULTS

SECRET_KEYS = {'jwt_secret', 'payment_gateway_key'}


def main():
    """Display loaded configuration and write an example settings file"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        shown = '********' if key in SECRET_KEYS and value else value
        print(f"{key}: {shown}")

    example = Path("settings.conf.example")
    lines = ["[DEFAULT]"]
    lines.extend(f"{key} = {value}" for key, value in DEFAULTS.items())
    example.write_text("\n".join(lines) + "\n")
    print(f"\nWrote {example}")


if __name__ == "__main__":
    main()
