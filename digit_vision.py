"""
Root entry point – delegates to the digit_vision package.

Usage:
    python digit_vision.py classify --image digit.png
    python digit_vision.py render   --digit 7 --count 8 --out samples/
    python digit_vision.py generate --per-class 600 --out digits.npz
"""

from digit_vision.main import main

if __name__ == "__main__":
    main()
