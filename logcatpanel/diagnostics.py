import sys


def warn(msg: str) -> None:
    # Non-fatal problem the user should see; never raises.
    print(f'[logcatpanel warn] {msg}', file=sys.stderr)
