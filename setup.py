from setuptools import setup, find_packages

with open("README.md") as f:
    readme = f.read()

with open("compliance/__init__.py") as f:
    for line in f:
        if line.startswith("__version__"):
            version = line.split('"')[1]

setup(
    name="fabric-chaincode-compliance",
    version=version,
    description="Fabric Chaincode Compliance - Network Topology & Lifecycle Orchestrator",
    long_description=readme,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=("tests", "*.tests", "*.tests.*")),
    include_package_data=True,
    package_data={
        "compliance": [
            "resources/networks/*/*/*.yaml",
            "resources/networks/shared/tools/*.sh",
            "resources/private_collections/*.json",
        ],
    },
    keywords=["hyperledger", "fabric", "chaincode", "compliance", "blockchain"],
    license="Apache License v2.0",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Other Environment",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Topic :: Software Development :: Testing",
        "License :: OSI Approved :: Apache Software License",
    ],
    scripts=[
        "compliance/cli/fabric-compliance",
    ],
    install_requires=[
        "PyYAML>=5.3.1",
        "docker>=4.1.0",
        "requests>=2.22.0",
    ],
    extras_require={
        "sdk": [
            "fabric-sdk-py>=0.9.0",
            "cryptography>=2.8",
        ],
        "test": [
            "pytest>=6.0",
            "fabric-sdk-py>=0.9.0",
        ],
    },
    python_requires=">=3.8",
    setup_requires=["setuptools>=41.1.0"],
)
