#!/usr/bin/env python3
"""Backup runner for cron"""
import sys
from clusterdump.cli import main

if __name__ == '__main__':
    sys.exit(main())
