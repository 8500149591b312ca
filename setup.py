"""Setup script for warden."""

from setuptools import setup, find_namespace_packages

with open("requirements.txt", "r") as f:
    requirements = [line for line in f.read().splitlines() if line and not line.startswith("#")]

setup(
    name="warden",
    version="0.1.0",
    description="Image trust enforcement for Kubernetes pods",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(include=["warden", "warden.*"]),
    install_requires=requirements,
    extras_require={
        'test': ['pytest>=7.0.0'],
    },
    entry_points={
        "console_scripts": [
            "warden=warden.main:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
