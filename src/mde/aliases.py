from mde.core.models import MediaFilter

MEDIA_ALIASES = {
    "all": MediaFilter.ALL,
    "images": MediaFilter.IMAGES,
    "image": MediaFilter.IMAGES,
    "videos": MediaFilter.VIDEOS,
    "video": MediaFilter.VIDEOS,
}

MEDIA_CHOICES = ["all", "images", "videos"]

MEDIA_HELP_TEXT = (
    "Which files to consider:\n"
    "  all     : Every regular file (exact duplicates only for non-images)\n"
    "  images  : Image files only (exact + perceptual matching)\n"
    "  videos  : Video files only (exact matching)\n"
    "Default: all"
)

ERASE_HELP_TEXT = (
    "Delete the duplicates listed in the report written by 'scan'.\n"
    "Every file is re-checked first; changed or missing files are skipped.\n"
    "Either every confirmed duplicate is deleted or none is."
)

EPILOG_TEXT = """
Examples:
  Find duplicates in a photo folder and write duplicates.json next to it
  %(prog)s scan ~/Pictures

  Only images, several folders, report written elsewhere
  %(prog)s scan ~/Pictures ~/Downloads --media images -o ~/dupes.json

  Show what an erase would delete, without touching anything
  %(prog)s erase ~/Pictures --dry-run

  Delete the duplicates without a prompt (for scripts), sending them to the trash
  %(prog)s erase ~/Pictures --yes --trash

  Forget a previous scan
  %(prog)s clean ~/Pictures
"""
