from navgen.loaders.obj_loader import load_obj

__all__ = ["load_obj"]
