#!/usr/bin/env python3
"""Reads requests and never answers."""

import sys


def main():
    for _line in sys.stdin:
        pass


if __name__ == "__main__":
    main()
