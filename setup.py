"""
Setup script for the zentpi library.
"""

from setuptools import setup, find_packages

# Read the README file
def read_readme():
    with open("README.md", "r", encoding="utf-8") as fh:
        return fh.read()

# Read requirements
def read_requirements():
    with open("requirements.txt", "r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="zentpi",
    version="0.1.0",
    description="Client-side driver for the zencontrol TPI Advanced UDP protocol: commands with retries, and typed event notifications.",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["zentpi", "zentpi.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Home Automation",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.11",
    install_requires=read_requirements(),
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-asyncio>=0.18.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "zentpi-monitor=zentpi.monitor:main",
        ],
    },
    include_package_data=True,
    package_data={
        "zentpi": ["py.typed"],
    },
    zip_safe=False,
)
