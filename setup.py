"""
setup.py: Setup script for the Pokemon Card Valuation System
"""

from setuptools import setup, find_packages

setup(
    name="pokemon-card-valuation",
    version="0.1.0",
    description="Pokemon card identification, set resolution, pricing and authenticity checks",
    packages=find_packages(include=["card_valuation", "card_valuation.*", "api", "api.*"]),
    install_requires=[
        "opencv-python>=4.8.0",
        "Pillow>=10.0.0",
        "pytesseract>=0.3.10",
        "numpy>=1.24.0",
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "slowapi>=0.1.9",
        "python-multipart>=0.0.6",
        "sqlalchemy>=2.0.0",
        "pydantic>=2.5.0",
        "click>=8.1.7",
        "python-dotenv>=1.0.0",
        "python-Levenshtein>=0.21.1",
        "fuzzywuzzy>=0.18.0",
        "tqdm>=4.66.0",
        "requests>=2.31.0",
        "openai>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        'console_scripts': [
            'card-val=card_valuation.cli.main:cli',
        ],
    },
)
