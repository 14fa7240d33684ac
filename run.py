"""
Entry Point Script (Bootstrap)
==============================
Runs the synthetic matching session straight from a source checkout.

Why is this file needed?
------------------------
1. It is located outside the 'src' package to act as a convenient runner.
2. It puts 'src' on 'sys.path' so 'colourreproduction' resolves without an
   editable install.

Usage:
    $ python run.py --targets 20 --noise 0.2
"""
import sys
import os

current_dir: str = os.path.dirname(os.path.abspath(__file__))
src_path: str = os.path.join(current_dir, 'src')
sys.path.insert(0, src_path)

from colourreproduction.main import main

if __name__ == "__main__":
    main()
