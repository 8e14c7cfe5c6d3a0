from setuptools import setup, find_packages

setup(
    name="windows-admin-tools",
    version="0.1.0",
    description="Windows administration tools: cloud storage, OneDrive removal, VPN, network and timezone",
    author="",
    author_email="",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "PySide6>=6.6.0",
        "psutil>=5.9.0",
        "pywin32>=306; sys_platform == 'win32'",
        "requests>=2.31.0",
        "dnspython>=2.4.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "winadmin=winadmin.main:main",
        ],
    },
)
