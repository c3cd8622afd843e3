"""Example usage of the Anthropic extractor for receipt data extraction.

This example reads a receipt photo and prints the structured data that
Claude returns through structured outputs. Nothing is stored.

Usage:
    python examples/extract_receipt_example.py path/to/receipt.jpg
"""

import asyncio
import mimetypes
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from receiptwise.integrations import AnthropicExtractor, ExtractionError

load_dotenv()


async def main(image_path: Path):
    """Example of extracting receipt data from a photo."""
    api_key = os.getenv("ANTHROPIC_API_KEY", "your-api-key-here")
    extractor = AnthropicExtractor(api_key=api_key)
    mime_type = mimetypes.guess_type(image_path.name)[0] or "image/jpeg"

    try:
        result = await extractor.extract_receipt_data(image_path.read_bytes(), mime_type)

        receipt = result.receipt
        print(f"Store: {receipt.store_name}")
        print(f"Date: {receipt.purchase_date}")
        print(f"Total: {receipt.total_amount} {receipt.currency}")
        print(f"Warranty until: {receipt.warranty_expiry_date or '-'}")
        if receipt.recurring_frequency:
            print(f"Recurring: {receipt.recurring_frequency.value}")

        print(f"\nProcessing time: {result.processing_time:.2f}s")
        print(f"Input tokens: {result.input_tokens}")
        print(f"Output tokens: {result.output_tokens}")

        print("\nItems:")
        for item in receipt.items:
            print(f"  - {item.name} x{item.quantity:g}: {item.price}")

    except ExtractionError as e:
        print(f"Error during extraction: {e}")
    finally:
        await extractor.client.close()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        sys.exit(__doc__)
    asyncio.run(main(Path(sys.argv[1])))
