from setuptools import setup, find_packages

setup(
    name="rnpatch",
    version="0.1.0",
    description="React Native APK补丁、签名与安装工具",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        'click>=8.0.0',
        'rich>=10.0.0',
        'requests>=2.25.0',
        'pyyaml>=5.4',
        'cryptography>=41.0.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.0.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'rnpatch=rnpatch.cli.main:cli',
        ],
    },
    python_requires='>=3.8',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Software Development :: Build Tools',
        'Programming Language :: Python :: 3.8',
    ],
)
