"""
Setup script for the PDF render service.

Allows development installation with `pip install -e .[test]`
"""

from setuptools import setup, find_packages

setup(
    name="pdf-render-service",
    version="1.0.0",
    packages=find_packages(include=["render_service", "render_service.*"]),
    package_data={"render_service": ["samples/*.html"]},
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "python-dotenv>=1.0",
        "playwright>=1.40",
        "tenacity>=8.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "httpx>=0.25",
        ],
    },
    entry_points={
        "console_scripts": [
            "pdf-render-service=render_service.app:main",
        ],
    },
)
