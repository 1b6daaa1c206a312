from setuptools import setup, find_packages

setup(
    name="flightdeck-operator",
    version="0.1.0",
    description="Kubernetes operator for managing Flightdeck and ClusterFlightdeck custom resources",
    author="Flightdeck",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={"flightdeck_operator.tests": ["fixtures/*.yaml"]},
    python_requires=">=3.11",
    install_requires=[
        "kopf>=1.37.0",
        "kubernetes>=28.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pyyaml>=6.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "flightdeck-operator=flightdeck_operator.operator:main",
        ],
    },
)
