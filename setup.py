from setuptools import setup, find_packages


setup(
    name="carship",
    version="0.1",
    packages=find_packages(include=["carship", "carship.*"]),
    description="Pack files into content-addressed CAR archives and upload them with identifier verification.",
    author="vercingetorx",
    python_requires=">=3.9",
    install_requires=[
        "httpx>=0.27",
        "python-dotenv>=1.0",
    ],
    entry_points={
        "console_scripts": [
            "carship=carship.cli:main",
        ]
    },
)
