# Services package init
"""
PixPress Backend — Services Layer
==================================

What:  Everything between the HTTP route and the image library.

Service Inventory:
    - UploadService:      form field extraction, option parsing, size checks,
                          type sniffing, scratch/debug files
    - ImageService:       Pillow decode → auto-rotate → resize → encode
    - ConverterService:   host CLI conversion tool behind a circuit breaker
    - CompressionService: buffer → path → converter fallback orchestration
"""
