from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="udptlspipe",
    version="1.3.1",
    author="UdpTlsPipe Team",
    author_email="udptlspipe@example.com",
    description="Client library that carries UDP datagrams over a TLS connection with configurable ClientHello fingerprints",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/udptlspipe/udptlspipe-python",
    packages=find_packages(include=["udptlspipe", "udptlspipe.*"]),
    package_data={
        "udptlspipe.testing": ["*.pem"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
    install_requires=[
        "pycryptodome>=3.14.1",
        "PySocks>=1.7.1",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        'console_scripts': [
            'udptlspipe-client=udptlspipe.client.client:main',
        ],
    },
    include_package_data=True,
)
