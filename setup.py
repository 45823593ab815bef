from setuptools import setup, find_packages

setup(
    name="vcce",
    version="0.1.0",
    description="Local daemon serving file system, shell and AI commands to code editors over framed TCP",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "mistralai>=1.0.0,<2",
        "python-dotenv>=1.0.0",
        "rich>=13.0.0",
        "typer>=0.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "vcce=vcce.main:vcce",
        ],
    },
    python_requires=">=3.10",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
