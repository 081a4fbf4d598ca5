#!/usr/bin/env python3
"""
Paygate - Entry Point
Точка входа для запуска платёжного сервиса
"""

from paygate.main import main
import asyncio

if __name__ == "__main__":
    asyncio.run(main())
