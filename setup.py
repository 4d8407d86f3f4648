from setuptools import setup
import os

VERSION = "0.1"


def get_long_description():
    with open(
        os.path.join(os.path.dirname(os.path.abspath(__file__)), "README.md"),
        encoding="utf8",
    ) as fp:
        return fp.read()


setup(
    name="datasette-dno-crawler",
    description="Learns where German grid operators publish their Netzentgelte and Hochlastzeitfenster, and crawls them from Datasette.",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    author="Colin Dellow",
    url="https://github.com/cldellow/datasette-dno-crawler",
    project_urls={
        "Issues": "https://github.com/cldellow/datasette-dno-crawler/issues",
        "CI": "https://github.com/cldellow/datasette-dno-crawler/actions",
        "Changelog": "https://github.com/cldellow/datasette-dno-crawler/releases",
    },
    license="Apache License, Version 2.0",
    classifiers=[
        "Framework :: Datasette",
        "License :: OSI Approved :: Apache Software License"
    ],
    version=VERSION,
    packages=["datasette_dno_crawler", "datasette_dno_crawler.plugins"],
    entry_points={"datasette": ["dno_crawler = datasette_dno_crawler"]},
    install_requires=["datasette>=0.64,<1.0", "selectolax<1.0", "pluggy", "httpx", "zstandard", "more-itertools>=9.0", "pdfplumber", "markupsafe"],
    extras_require={"test": ["wheel", "pytest", "pytest-asyncio", "pytest-watch", "coverage"]},
    python_requires=">=3.8",
)
