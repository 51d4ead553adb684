from setuptools import setup

version = '0.1'

with open("README.md", "r", encoding="utf-8") as f:
    long_descr = f.read()

setup(
    name='pyavrctl',
    packages=['pyavrctl'],
    py_modules=['main'],
    version=version,
    license='Apache 2.0',
    description='Self hosted Alexa skill to control a network-enabled Pioneer AVR through telnet commands',
    long_description=long_descr,
    long_description_content_type='text/markdown',
    keywords=['Alexa', 'AVR', 'Pioneer', 'telnet'],
    install_requires=[
        "aiohttp>=3.9"
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": ["pyavrctl=main:main"],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Home Automation',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3.10'
    ],
)
