#!/usr/bin/env python

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="tlsocket",
    version="1.0.0",
    description="TLS stream sockets over already-connected transports, with recorded peer verification and nonblocking retries",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Zied Boughdir",
    author_email="ziedboughdir@gmail.com",
    url="https://github.com/zinzied/tlsocket",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Intended Audience :: Developers",
        "Topic :: Internet",
        "Topic :: Security :: Cryptography",
        "Topic :: Software Development :: Libraries",
    ],
    python_requires=">=3.8",
    install_requires=[
        "idna>=2.0.0",
        "certifi",
        # x509.verification (PolicyBuilder/Store) arrived in 42.0
        "cryptography>=42.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
            "flake8>=6.0.0",
        ],
    },
    project_urls={
        "Bug Tracker": "https://github.com/zinzied/tlsocket/issues",
        "Source Code": "https://github.com/zinzied/tlsocket",
    },
)
