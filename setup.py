import os
from setuptools import setup, find_packages

SETUP_DIR = os.path.dirname(os.path.realpath(__file__))
README_PATH = os.path.join(SETUP_DIR, "README.md")

with open(README_PATH, "r") as readme:
    README = readme.read()

setup(
    name="depvendor",
    description="Transactional writer for dependency manifests, locks and vendor trees",
    long_description=README,
    long_description_content_type="text/markdown",
    license="LGPL-3.0-or-later",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages("src", exclude=["test"]),
    python_requires=">=3.11",
    install_requires=[
        "platformdirs>=4.0",
        "pydantic>=2.7",
        "pydantic-settings>=2.7",
        "tomlkit>=0.12",
        "tqdm>=4.48.0",
    ],
    extras_require={
        "dev": ["ruff", "pytest", "twine", "mypy>=0.812", "types-setuptools", "types-tqdm"]
    },
    entry_points={
        "console_scripts": [
            "depvendor = depvendor.__main__:main"
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: GNU Lesser General Public License v3 or later (LGPLv3+)",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Software Development :: Build Tools",
        "Topic :: Utilities"
    ]
)
