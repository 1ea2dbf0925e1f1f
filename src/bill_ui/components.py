"""
UI components for the bill scanner.
Provides upload and camera capture inputs, progress display and the result card.
"""

import streamlit as st
import logging
from typing import Optional

from bill_core.models import ExtractionResult, ProcessingResult
from bill_core.pipeline import BillProcessor

logger = logging.getLogger(__name__)

STAGE_LABELS = {
    "normalizing": "Preparing image...",
    "recognizing": "Recognizing text...",
    "extracting": "Reading bill fields...",
    "done": "Processing complete!"
}


def setup_sidebar():
    """Setup the sidebar with usage tips."""
    with st.sidebar:
        st.header("🧾 Bill Scanner")

        st.markdown("""
        **Version:** 1.0.0
        """)

        st.markdown("---")

        with st.expander("❓ Help & Tips", expanded=True):
            st.markdown("""
            **Supported Formats:**
            - Images: PNG, JPG, JPEG, BMP, TIFF, WEBP
            - PDF files (text or scanned)
            - Max. 10 MB per file

            **Best Results:**
            - Clear, well-lit photos
            - Straight orientation
            - Whole bill in frame
            """)


def display_input_tabs() -> None:
    """Display the upload and camera tabs and process the submitted image."""
    upload_tab, camera_tab = st.tabs(["Upload Bill", "Camera Capture"])

    with upload_tab:
        uploaded_file = st.file_uploader(
            "Click to upload or drag and drop",
            type=['png', 'jpg', 'jpeg', 'bmp', 'tiff', 'tif', 'webp', 'pdf'],
            help="PNG, JPG or PDF (max. 10MB)"
        )
        if uploaded_file is not None and st.button("🚀 Process Bill", type="primary"):
            process_submission(uploaded_file.getvalue(), uploaded_file.name)

    with camera_tab:
        captured = st.camera_input("Take a photo of your bill")
        if captured is not None and st.button("🚀 Process Photo", type="primary"):
            process_submission(captured.getvalue(), captured.name or "camera_capture.jpg")


def process_submission(file_content: bytes, filename: str) -> None:
    """Run the bill processor with a live progress bar and store the outcome.

    Args:
        file_content: Raw file bytes
        filename: Name used for type detection
    """
    if 'bill_processor' not in st.session_state:
        st.error("Bill processor not initialized")
        return

    processor: BillProcessor = st.session_state.bill_processor

    st.session_state.image_preview = None if filename.lower().endswith('.pdf') else file_content

    progress_bar = st.progress(0)
    status_text = st.empty()

    def on_progress(stage: str, fraction: float) -> None:
        progress_bar.progress(fraction)
        status_text.text(STAGE_LABELS.get(stage, stage))

    with st.spinner("Processing your bill..."):
        result = processor.process_file(file_content, filename, progress=on_progress)

    progress_bar.empty()
    status_text.empty()

    st.session_state.last_result = result

    if result.success:
        st.toast("Your bill has been successfully analyzed.")
    else:
        logger.warning(f"Processing failed for {filename}: {result.errors}")
        st.toast("There was an error processing your bill.")


def display_processing_result(result: ProcessingResult, image_preview: Optional[bytes] = None) -> None:
    """Display a processing result, including errors and warnings."""
    if not result.success:
        for error in result.errors:
            st.error(f"Error processing your bill: {error}")
        return

    display_bill_results(result.result, image_preview)

    if result.warnings:
        with st.expander("⚠️ Warnings", expanded=False):
            for warning in result.warnings:
                st.text(f"• {warning}")

    if result.normalized_image:
        with st.expander("🔍 Image sent to OCR", expanded=False):
            st.image(result.normalized_image, caption="Grayscale, Otsu threshold, median filter")

    if result.processing_time is not None:
        st.caption(f"Processed in {result.processing_time:.2f} seconds ({result.source})")


def display_bill_results(extraction: ExtractionResult, image_preview: Optional[bytes] = None) -> None:
    """Display the extracted fields and the raw OCR text."""
    st.subheader("📄 Bill Analysis Results")

    if image_preview:
        st.image(image_preview, caption="Analyzed Image", width=320)

    col1, col2, col3 = st.columns(3)

    with col1:
        if extraction.merchant:
            st.metric("🏪 Merchant", extraction.merchant)
    with col2:
        if extraction.date:
            st.metric("📅 Date", extraction.date)
    with col3:
        if extraction.total:
            st.metric("💲 Total Amount", f"${extraction.total}")

    if not extraction.has_fields:
        st.info("No merchant, date or total could be identified. The recognized text is shown below.")

    st.markdown("**Extracted Text** (Raw OCR Data)")
    st.code(extraction.full_text or "", language=None)

    with st.expander("JSON", expanded=False):
        st.json(extraction.to_dict())


def reset_session() -> None:
    """Clear the current result so another bill can be processed."""
    st.session_state.last_result = None
    st.session_state.image_preview = None
