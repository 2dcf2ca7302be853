"""Prompt templates for captioning and page-to-markdown extraction."""

from collections.abc import Sequence

from magtoepub.config.constants import COVER_IMAGE_NAME, PAGE_BREAK_MARKER
from magtoepub.image.models import ExtractedImage

NO_DESCRIPTION = "No description available"
NO_IMAGES = "No images extracted for this section."

CAPTION_PROMPT = """Analyze these {count} magazine images.
Return a JSON ARRAY where each object has 'name' (filename) and 'description' (short descriptive alt text).
Example: [{{"name": "image_p2_i1.jpg", "description": "Portrait of the author smiling"}}]"""

EXTRACTION_PROMPT = """You are an expert digital publisher and accessibility specialist.
Convert the provided magazine pages into clean, structured Markdown suitable for conversion to an EPUB ebook.

I have provided {page_count} images representing consecutive pages of a magazine.

Rules:
1. SEQUENCE (CRITICAL):
   - Process the pages strictly in the order provided.
   - Output the full text content. Do not summarize.

2. TEXT REFINEMENT (CRITICAL):
   - DE-HYPHENATION: You MUST fix words split across lines.
     - Example: If you see "Stan- ford" or "un- believable" due to a line break, output "Stanford" and "unbelievable".
     - Remove the hyphen and the newline/space between the parts.
   - CLEANUP: Remove running headers, footers, and page numbers.
   - ADS: Do not include advertisement content.
   - OMISSIONS:
     - Do NOT transcribe the magazine's original "Table of Contents" or "Index" pages.
     - Do NOT transcribe "Masthead" or "Credits" sections.
     - If a page contains ONLY these ignored elements, output nothing for that page (except the PAGE_BREAK).

3. PROGRESS TRACKING (CRITICAL):
   - At the very end of the content for EACH physical page, you MUST insert the following marker on a new line:
     {page_break}

4. Structure & Hierarchy (CRITICAL FOR TOC):
   - H1 (#): Use ONLY for the Main Article Title (once per article).
   - H2 (##): Use ONLY for distinct structural sections (e.g., "Introduction", "The Early Years").
   - Q&A / INTERVIEWS: Do NOT use Headers (# or ##) for interview questions. Use **Bold Text** instead.
   - Do NOT use headers for paragraphs or pull quotes.
   - Use > for Pull Quotes.
   - Note: Any line starting with # or ## will appear in the Table of Contents. Keep it clean.

5. IMAGES (SMART PLACEMENT):
   - I have extracted specific images from these pages. Here is the INVENTORY of available files and their content:

{inventory}

   - Your Task: As you read the text, if you encounter visual content (a photo, a chart, an illustration) that MATCHES a description in the inventory, insert the image tag.
   - Syntax: ![Alt Text](filename)
   - Logic:
     - If the text describes a "Chart of Revenue", and the inventory has 'image_p5_i1.jpg': "Bar chart showing revenue", LINK IT.
     - If you see an image on the page but it is NOT in the inventory (it might have been too small/blurry and was filtered out), DO NOT invent a filename. Skip it.
   - Placement: Insert the image tag EXACTLY where it belongs contextually (e.g., between paragraphs discussing the image).

   - EXCEPTION: Do NOT insert "{cover}". This is the cover.

6. Output:
   - Return ONLY the markdown.
"""


def build_caption_prompt(count: int) -> str:
    return CAPTION_PROMPT.format(count=count)


def format_inventory(images: Sequence[ExtractedImage]) -> str:
    """Render the image inventory as ``- name: "description"`` lines."""
    return "\n".join(
        f'- {image.name}: "{image.description or NO_DESCRIPTION}"' for image in images
    )


def build_extraction_prompt(page_count: int, images: Sequence[ExtractedImage]) -> str:
    """Build the page-to-markdown instruction for one batch."""
    return EXTRACTION_PROMPT.format(
        page_count=page_count,
        page_break=PAGE_BREAK_MARKER,
        inventory=format_inventory(images) or NO_IMAGES,
        cover=COVER_IMAGE_NAME,
    )
