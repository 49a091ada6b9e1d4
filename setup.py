import pathlib

import setuptools

dirname = pathlib.Path(__file__).resolve().parent

with open(dirname / "README.md") as long_description_file:
    long_description = long_description_file.read()

exec(open(dirname / "b2large" / "version.py").read())  # defines __version__

setuptools.setup(
    name="b2large",
    version=__version__,  # type: ignore
    description="Upload and copy large files to Backblaze B2 with parallel, resumable part transfers",
    long_description=long_description,
    long_description_content_type="text/markdown",
    install_requires=[
        "jsonschema-rs>=0.20",
        "requests>=2.28,<3",
        "tomli>=1.1; python_version<'3.11'",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    python_requires=">=3.9",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    packages=["b2large"],
    package_data={"": ["*.json", "*.toml"]},
)
